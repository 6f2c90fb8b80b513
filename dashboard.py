"""
Solar Lamp Distribution Dashboard

Interactive Streamlit dashboard over KoboToolbox lamp-distribution surveys.

Features:
- Overview: totals, gender split, career aspirations, household indicators
- Schools: per-school poverty indicators and student lists
- Students: searchable, paginated student table and profiles
- Map: school and student GPS locations
- Upload: transform an exported XLSX/CSV/JSON file
- Forms: forms available on the KoboToolbox account
"""

from datetime import timedelta

import streamlit as st
import plotly.express as px
import plotly.graph_objects as go
import pandas as pd

from config import CACHE_TTL_HOURS, GENDER_COLORS, ELECTRICITY_COLORS, KOBO_FORM_ID, STUDENTS_PER_PAGE
from chart_data import (
    career_aspirations_by_school, electricity_source_distribution, filter_students,
    get_school, get_student, get_students_by_school, map_center, map_points, paginate,
    schools_to_dataframe, students_to_dataframe
)
from kobo_transformer import DashboardData, School, Student, Summary
from load_data import (
    KoboClient, KoboFetchError, clear_cache, load_live_dashboard_data, mock_fallback_data,
    transform_uploaded_file
)

# Page configuration
st.set_page_config(
    page_title="Solar Lamp Distribution Dashboard",
    page_icon="💡",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom CSS
st.markdown("""
<style>
    .source-badge {
        padding: 4px 12px;
        border-radius: 20px;
        font-size: 0.85em;
        font-weight: 500;
        color: white;
    }
    .student-photo img {
        border-radius: 50%;
    }
</style>
""", unsafe_allow_html=True)

SOURCE_COLORS = {
    "kobo": "#388e3c",
    "cache": "#1976d2",
    "mock": "#dc3545",
    "upload": "#f57c00"
}


# ==================== DATA LOADING ====================

@st.cache_data(ttl=timedelta(hours=CACHE_TTL_HOURS), show_spinner="Loading KoboToolbox data...")
def load_data(form_uid: str) -> DashboardData:
    """Load dashboard data (JSON cache, then API). A failed fetch raises and is not cached."""
    return load_live_dashboard_data(form_uid)


@st.cache_data(ttl=timedelta(minutes=10))
def load_forms() -> tuple:
    result = KoboClient().list_forms()
    return result.success, result.data, result.error


def get_active_data() -> DashboardData:
    """Uploaded data wins over API data for the rest of the session."""
    uploaded = st.session_state.get("uploaded_data")
    if uploaded is not None:
        return uploaded
    try:
        return load_data(KOBO_FORM_ID)
    except KoboFetchError:
        # Retried on the next rerun
        return mock_fallback_data()


# ==================== CHART FUNCTIONS ====================

def create_gender_chart(summary: Summary) -> go.Figure:
    """Create donut chart of the gender distribution."""
    genders = [g.gender for g in summary.gender_distribution]
    counts = [g.count for g in summary.gender_distribution]

    fig = go.Figure(go.Pie(
        labels=genders,
        values=counts,
        hole=0.5,
        marker_colors=[GENDER_COLORS.get(g, "#999") for g in genders]
    ))
    fig.update_layout(title="Gender Distribution", height=350)
    return fig


def create_career_chart(aspirations: list, title: str = "Top Career Aspirations") -> go.Figure:
    """Create horizontal bar chart of aspiration counts."""
    names = [a.name for a in aspirations]
    counts = [a.count for a in aspirations]

    fig = go.Figure(go.Bar(
        x=counts,
        y=names,
        orientation='h',
        marker_color='#1976d2',
        text=counts,
        textposition='outside'
    ))
    fig.update_layout(
        title=title,
        xaxis_title="Students",
        yaxis=dict(autorange="reversed"),
        height=max(300, len(names) * 40)
    )
    return fig


def create_career_by_gender_chart(summary: Summary) -> go.Figure:
    """Create grouped bar chart of aspirations split by Male/Female."""
    rows = summary.career_aspirations_by_gender
    names = [r.name for r in rows]

    fig = go.Figure()
    fig.add_trace(go.Bar(x=names, y=[r.Male for r in rows], name='Male',
                         marker_color=GENDER_COLORS['Male']))
    fig.add_trace(go.Bar(x=names, y=[r.Female for r in rows], name='Female',
                         marker_color=GENDER_COLORS['Female']))
    fig.update_layout(
        title="Career Aspirations by Gender",
        barmode='group',
        xaxis_tickangle=-45,
        yaxis_title="Students",
        height=500
    )
    return fig


def create_electricity_chart(students: list) -> go.Figure:
    distribution = electricity_source_distribution(students)
    labels = list(distribution.keys())

    fig = go.Figure(go.Pie(
        labels=labels,
        values=list(distribution.values()),
        marker_colors=[ELECTRICITY_COLORS.get(label, "#999") for label in labels]
    ))
    fig.update_layout(title="Current Lighting Source", height=350)
    return fig


def create_school_comparison_chart(schools: list) -> go.Figure:
    """Create grouped bar chart of the percentage indicators per school."""
    df = schools_to_dataframe(schools)

    fig = px.bar(
        df,
        x='School',
        y=['Without Electricity %', 'With Smartphones %'],
        barmode='group',
        labels={'value': 'Percentage (%)', 'variable': 'Indicator'}
    )
    fig.update_layout(title="Poverty Indicators by School", yaxis=dict(range=[0, 105]), height=400)
    return fig


def create_map(students: list, schools: list) -> go.Figure:
    points = map_points(students, schools)
    center_lat, center_lng = map_center(points)

    fig = px.scatter_map(
        points,
        lat='lat',
        lon='lng',
        color='kind',
        size='students',
        size_max=20,
        hover_name='name',
        color_discrete_map={'School': '#dc3545', 'Student': '#1976d2'},
        zoom=9,
        center={'lat': center_lat, 'lon': center_lng},
        map_style='open-street-map'
    )
    fig.update_layout(height=600, margin=dict(l=0, r=0, t=0, b=0))
    return fig


# ==================== PAGE SECTIONS ====================

def render_overview(data: DashboardData):
    summary = data.summary
    st.header("Overview")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Total Students", summary.total_students)
    with col2:
        st.metric("Lamps Distributed", summary.total_lamps)
    with col3:
        st.metric("Schools", len(summary.schools))
    with col4:
        st.metric("Average Age", f"{summary.average_age:.1f}")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Average Meals/Day", f"{summary.average_meals_per_day:.1f}")
    with col2:
        st.metric("Without Electricity", f"{summary.percent_without_electricity:.1f}%")
    with col3:
        st.metric("With Smartphones", f"{summary.percent_with_smartphones:.1f}%")

    st.divider()

    if summary.total_students == 0:
        st.warning("No student submissions available.")
        return

    col1, col2, col3 = st.columns(3)
    with col1:
        st.plotly_chart(create_gender_chart(summary), use_container_width=True)
    with col2:
        st.plotly_chart(create_career_chart(summary.career_aspirations), use_container_width=True)
    with col3:
        st.plotly_chart(create_electricity_chart(data.students), use_container_width=True)

    st.plotly_chart(create_career_by_gender_chart(summary), use_container_width=True)


def render_school_detail(school: School, students: list):
    st.subheader(school.name)
    st.caption(f"{school.location} | ID: {school.id}")

    indicators = school.poverty_indicators
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Students", school.total_students)
    with col2:
        st.metric("Average Meals/Day", f"{indicators.average_meals_per_day:.1f}")
    with col3:
        st.metric("Without Electricity", f"{indicators.percent_without_electricity:.1f}%")
    with col4:
        st.metric("With Smartphones", f"{indicators.percent_with_smartphones:.1f}%")

    school_students = get_students_by_school(students, school.id)
    aspirations = career_aspirations_by_school(students, school.id)
    if aspirations:
        st.plotly_chart(create_career_chart(aspirations, "Career Aspirations"), use_container_width=True)

    st.markdown("**Students**")
    st.dataframe(students_to_dataframe(school_students), use_container_width=True, hide_index=True)


def render_schools(data: DashboardData):
    st.header("Schools")
    schools = data.summary.schools

    if not schools:
        st.warning("No schools found in the submissions.")
        return

    st.dataframe(schools_to_dataframe(schools), use_container_width=True, hide_index=True)
    st.plotly_chart(create_school_comparison_chart(schools), use_container_width=True)

    st.divider()
    options = {f"{s.name} ({s.id})": s.id for s in schools}
    selected = st.selectbox("Select School", list(options.keys()))
    school = get_school(schools, options[selected])
    if school:
        render_school_detail(school, data.students)


def render_student_profile(student: Student):
    col1, col2 = st.columns([1, 3])
    with col1:
        if student.photo.startswith("http"):
            st.image(student.photo, width=180)
        else:
            st.caption("No photo")
    with col2:
        st.subheader(student.name)
        st.markdown(f"""
        - **Age**: {student.age}
        - **Gender**: {student.gender}
        - **Grade**: {student.grade}
        - **School**: {student.school.name}
        - **Career Aspiration**: {student.career_aspiration}
        - **Lamp Serial Number**: {student.lamp_serial_number}
        """)

    household = student.household_info
    st.markdown("**Household**")
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Meals/Day", household.meals_per_day)
    with col2:
        st.metric("Lighting", household.electricity_source)
    with col3:
        st.metric("Smartphone", "Yes" if household.has_smartphone else "No")
    with col4:
        st.metric("Income Source", household.parent_income_source)


def render_students(data: DashboardData):
    st.header("Students")

    col1, col2, col3 = st.columns([2, 1, 1])
    with col1:
        search = st.text_input("Search by student or school name")
    with col2:
        gender = st.selectbox("Gender", ["All", "Male", "Female", "Other"])
    with col3:
        school_names = {"All": None}
        school_names.update({s.name: s.id for s in data.summary.schools})
        school_choice = st.selectbox("School", list(school_names.keys()))

    filtered = filter_students(data.students, search, gender, school_names[school_choice])
    st.caption(f"{len(filtered)} of {len(data.students)} students")

    page = st.number_input("Page", min_value=1, value=1, step=1)
    page_students, total_pages = paginate(filtered, int(page), STUDENTS_PER_PAGE)
    st.dataframe(students_to_dataframe(page_students), use_container_width=True, hide_index=True)
    st.caption(f"Page {min(int(page), total_pages)} of {total_pages}")

    if filtered:
        st.divider()
        options = {f"{s.name} ({s.id})": s.id for s in filtered}
        selected = st.selectbox("Select Student", list(options.keys()))
        student = get_student(filtered, options[selected])
        if student:
            render_student_profile(student)


def render_map(data: DashboardData):
    st.header("Map")
    points = map_points(data.students, data.summary.schools)
    if points.empty:
        st.warning("No GPS readings available.")
        return
    st.plotly_chart(create_map(data.students, data.summary.schools), use_container_width=True)
    st.caption(f"{(points['kind'] == 'School').sum()} schools, "
               f"{(points['kind'] == 'Student').sum()} students with GPS readings")


def render_upload():
    st.header("Upload Data")
    st.markdown("Upload a KoboToolbox export (XLSX, CSV or JSON) to view it in the dashboard.")

    uploaded_file = st.file_uploader("Choose a file", type=["xlsx", "csv", "json"])
    if uploaded_file is None:
        return

    try:
        data = transform_uploaded_file(uploaded_file.name, uploaded_file.getvalue())
    except ValueError as e:
        st.error(f"Could not process {uploaded_file.name}: {e}")
        return

    st.success(f"Successfully processed {data.summary.total_students} students "
               f"from {uploaded_file.name}")
    st.dataframe(students_to_dataframe(data.students).head(20), use_container_width=True, hide_index=True)

    if st.button("Use this data in the dashboard", type="primary"):
        st.session_state.uploaded_data = data
        st.rerun()


def render_forms():
    st.header("Forms")
    success, forms, error = load_forms()
    if not success:
        st.error(error)
        return

    rows = [
        {
            'Name': f.get('name'),
            'UID': f.get('uid'),
            'Type': f.get('asset_type'),
            'Submissions': f.get('deployment__submission_count'),
            'Last Modified': f.get('date_modified')
        }
        for f in forms if isinstance(f, dict)
    ]
    if not rows:
        st.info("No forms found for this account.")
        return
    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)


# ==================== MAIN DASHBOARD ====================

def main():
    data = get_active_data()

    col_title, col_source = st.columns([3, 1])
    with col_title:
        st.title("Solar Lamp Distribution Dashboard")
    with col_source:
        color = SOURCE_COLORS.get(data.source, '#666')
        st.markdown(
            f"<div style='text-align: right; padding-top: 20px;'>"
            f"<span class='source-badge' style='background-color: {color};'>"
            f"Source: {data.source}</span><br>"
            f"<small style='color: #666;'>{data.fetched_at[:16]}</small>"
            f"</div>",
            unsafe_allow_html=True
        )

    if data.error:
        st.error(data.error)

    # Sidebar navigation
    st.sidebar.title("Navigation")
    tab_selection = st.sidebar.radio(
        "Select View:",
        ["Overview", "Schools", "Students", "Map", "Upload", "Forms"]
    )

    st.sidebar.markdown("---")
    if st.sidebar.button("Refresh data"):
        clear_cache()
        load_data.clear()
        st.session_state.pop("uploaded_data", None)
        st.rerun()
    if st.session_state.get("uploaded_data") is not None:
        st.sidebar.caption("Showing uploaded data")

    if tab_selection == "Overview":
        render_overview(data)
    elif tab_selection == "Schools":
        render_schools(data)
    elif tab_selection == "Students":
        render_students(data)
    elif tab_selection == "Map":
        render_map(data)
    elif tab_selection == "Upload":
        render_upload()
    elif tab_selection == "Forms":
        render_forms()


if __name__ == "__main__":
    main()
